"""REST API subpackage."""
