"""Streamlit matrix editor."""
