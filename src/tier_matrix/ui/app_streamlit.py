"""
Streamlit UI for the Tier Matrix editor.

Features:
- Matrix tab: one row per variant in type -> variant -> sub-variant order,
  one column per shared quantity breakpoint, editable prices
- Breakpoints tab: add / move / remove a breakpoint across every variant
- Variants tab: create, rename and delete variants
- Save / Discard for the whole edit session
"""
import asyncio
import streamlit as st
import pandas as pd
import sys
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent.parent
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from tier_matrix.config.settings import get_settings
from tier_matrix.engine.edit_session import LocalEditSession
from tier_matrix.engine.hierarchy import VariantLevel
from tier_matrix.engine.models import to_price
from tier_matrix.services.tier_store import CsvTierStore
from tier_matrix.services.tiers_cache import TiersCache
from tier_matrix.utils.logger import setup_logging


st.set_page_config(
    page_title="Tier Matrix Editor",
    layout="wide",
    initial_sidebar_state="expanded"
)

LEVEL_PREFIX = {
    VariantLevel.TYPE: "",
    VariantLevel.VARIANT: "↳ ",
    VariantLevel.SUB_VARIANT: "    ↳ ",
}


@st.cache_resource
def get_settings_cached():
    """Get cached settings."""
    settings = get_settings()
    setup_logging(settings.log_level)
    return settings


@st.cache_resource
def get_store():
    """Get cached CSV store instance."""
    settings = get_settings_cached()
    return CsvTierStore(settings.variants_csv, settings.tiers_csv)


@st.cache_resource
def get_cache():
    return TiersCache(ttl_seconds=get_settings_cached().tiers_cache_ttl_seconds)


def open_session(service_id: int) -> LocalEditSession:
    settings = get_settings_cached()
    return asyncio.run(LocalEditSession.open(
        get_store(),
        service_id,
        cache=get_cache(),
        batch_size=settings.flush_batch_size,
        discriminating_keys=settings.discriminating_keys,
    ))


try:
    settings = get_settings_cached()
    store = get_store()
except Exception as e:
    st.error(f"System Error: {e}")
    st.stop()


# ============================================================================
# SIDEBAR: Service + session controls
# ============================================================================
with st.sidebar:
    st.header("🧮 Service")
    service_id = int(st.number_input("Service ID", min_value=1, value=1, step=1))

    if st.session_state.get("service_id") != service_id or "session" not in st.session_state:
        st.session_state.service_id = service_id
        st.session_state.session = open_session(service_id)
        st.session_state.last_report = None

    session: LocalEditSession = st.session_state.session

    st.divider()
    if session.has_unsaved_changes:
        st.warning(
            f"Unsaved: {len(session.range_changes)} breakpoint op(s), "
            f"{len(session.price_changes)} price edit(s), "
            f"{len(session.variant_changes)} variant change(s)"
        )
    else:
        st.success("All changes saved")

    c1, c2 = st.columns(2)
    with c1:
        if st.button("💾 Save", type="primary", use_container_width=True, disabled=not session.has_unsaved_changes):
            with st.spinner("Saving..."):
                st.session_state.last_report = asyncio.run(session.flush())
            st.rerun()
    with c2:
        if st.button("↩️ Discard", use_container_width=True, disabled=not session.has_unsaved_changes):
            session.cancel()
            st.rerun()

    if st.button("🔄 Reload from store", use_container_width=True):
        get_cache().invalidate(service_id)
        st.session_state.session = open_session(service_id)
        st.session_state.last_report = None
        st.rerun()

    report = st.session_state.get("last_report")
    if report is not None:
        st.divider()
        if report.ok:
            st.success(f"Saved: {len(report.applied)} operation(s)")
        else:
            st.error(f"{len(report.failures)} operation(s) failed - edits kept, Save to retry")
            st.text(report.get_summary_text())


# ============================================================================
# MAIN CONTENT: TABBED INTERFACE
# ============================================================================
st.title("Tier Matrix Editor")
st.caption(f"Service {service_id} | {len(session.variants)} variant(s) | {len(session.common_ranges)} breakpoint(s)")

tab1, tab2, tab3 = st.tabs(["📊 Matrix", "📏 Breakpoints", "🧩 Variants"])


# ============================================================================
# TAB 1: PRICE MATRIX
# ============================================================================
with tab1:
    columns = session.common_ranges
    rows = []
    for group in session.hierarchy.values():
        for level, variant in group.rows():
            row = {
                "variant_id": variant.id,
                "Variant": LEVEL_PREFIX[level] + variant.display_name,
            }
            for col in columns:
                tier = variant.tier_at(col.min_qty)
                row[col.label] = float(tier.price) if tier else None
            rows.append(row)

    if not rows:
        st.info("No variants yet - add one in the Variants tab.")
    else:
        matrix_df = pd.DataFrame(rows).set_index("variant_id")
        edited_df = st.data_editor(
            matrix_df,
            use_container_width=True,
            column_config={
                "Variant": st.column_config.TextColumn("Variant", disabled=True),
                **{
                    c.label: st.column_config.NumberColumn(c.label, min_value=0.0, step=0.01, format="%.2f")
                    for c in columns
                },
            },
            hide_index=True,
            key=f"matrix_editor_{service_id}",
        )

        if st.button("✏️ Apply price edits"):
            changed = 0
            for variant_id, row in edited_df.iterrows():
                for col in columns:
                    before = matrix_df.loc[variant_id, col.label]
                    after = row[col.label]
                    if pd.isna(after) or (not pd.isna(before) and before == after):
                        continue
                    session.set_price(int(variant_id), col.min_qty, str(after))
                    changed += 1
            st.toast(f"{changed} price(s) changed")
            st.rerun()

    orphans = session.orphans()
    if orphans:
        with st.expander(f"⚠️ {len(orphans)} variant(s) not shown (missing parent)"):
            st.dataframe(pd.DataFrame([
                {"ID": v.id, "Name": v.display_name, "Parent": v.parent_variant_id}
                for v in orphans
            ]), hide_index=True)


# ============================================================================
# TAB 2: BREAKPOINTS
# ============================================================================
with tab2:
    boundaries = [c.min_qty for c in session.common_ranges]
    col1, col2, col3 = st.columns(3)

    with col1:
        st.markdown("##### ➕ Add breakpoint")
        new_boundary = int(st.number_input("From quantity", min_value=1, value=50, step=1, key="add_boundary"))
        if st.button("Add", key="add_btn"):
            if session.add_boundary(new_boundary):
                st.rerun()
            else:
                st.warning(f"Breakpoint {new_boundary} not added")

    with col2:
        st.markdown("##### ✏️ Move breakpoint")
        if boundaries:
            old = st.selectbox("Breakpoint", boundaries, key="edit_old")
            moved = int(st.number_input("New quantity", min_value=1, value=int(old), step=1, key="edit_new"))
            if st.button("Move", key="edit_btn"):
                if session.edit_boundary(old, moved):
                    st.rerun()
                else:
                    st.warning(f"Breakpoint {old} not moved to {moved}")

    with col3:
        st.markdown("##### 🗑️ Remove breakpoint")
        if boundaries:
            doomed = st.selectbox("Breakpoint", boundaries, key="remove_boundary")
            if st.button("Remove", key="remove_btn"):
                if session.remove_boundary(doomed):
                    st.rerun()
                else:
                    st.warning("The last tier of a variant cannot be removed")

    st.divider()
    st.dataframe(
        pd.DataFrame([{"From": c.min_qty, "To": c.max_qty, "Label": c.label} for c in session.common_ranges]),
        use_container_width=True,
        hide_index=True,
    )


# ============================================================================
# TAB 3: VARIANTS
# ============================================================================
with tab3:
    variants = session.variants
    col1, col2 = st.columns(2, gap="large")

    with col1:
        st.markdown("##### ➕ New variant")
        with st.form("create_variant", clear_on_submit=True):
            name = st.text_input("Display name")
            type_value = st.text_input("Type (leave empty for a type row)")
            density = st.text_input("Density")
            parent_options = {"(none)": None, **{f"{v.display_name} #{v.id}": v.id for v in variants}}
            parent_label = st.selectbox("Parent variant", list(parent_options))
            base_price = st.text_input("Starting price", value="0")
            if st.form_submit_button("Create"):
                params = {}
                if type_value:
                    params["type"] = type_value
                if density:
                    params["density"] = density
                if not name.strip():
                    st.warning("Display name is required")
                else:
                    try:
                        price = to_price(base_price)
                    except ValueError:
                        price = None
                    if price is None:
                        st.warning(f"Invalid price: {base_price}")
                    else:
                        created = session.create_variant(
                            name.strip(), params, parent_variant_id=parent_options[parent_label]
                        )
                        for c in session.common_ranges:
                            session.set_price(created.id, c.min_qty, price)
                        st.rerun()

    with col2:
        st.markdown("##### ✏️ Rename type group")
        groups = list(session.hierarchy)
        if groups:
            group_key = st.selectbox("Group", groups)
            new_name = st.text_input("New name", value=group_key)
            if st.button("Rename"):
                count = session.rename_type_group(group_key, new_name.strip())
                st.toast(f"Renamed {count} variant(s)")
                st.rerun()

        st.markdown("##### 🗑️ Delete variant")
        if variants:
            labels = {f"{v.display_name} #{v.id}": v.id for v in variants}
            doomed_label = st.selectbox("Variant", list(labels))
            if st.button("Delete", type="secondary"):
                session.delete_variant(labels[doomed_label])
                st.rerun()

    st.divider()
    st.dataframe(
        pd.DataFrame([
            {
                "ID": v.id,
                "Name": v.display_name,
                "Parameters": ", ".join(f"{k}={val}" for k, val in v.parameters.items()),
                "Parent": v.parent_variant_id,
                "Sort": v.sort_order,
                "Tiers": len(v.tiers),
            }
            for v in variants
        ]),
        use_container_width=True,
        hide_index=True,
    )
