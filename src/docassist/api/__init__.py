"""HTTP surface for docassist."""
