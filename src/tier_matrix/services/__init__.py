"""Services subpackage - tier stores and the tier listing cache."""
