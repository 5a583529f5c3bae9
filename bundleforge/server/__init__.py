"""HTTP surface for bundleforge."""
