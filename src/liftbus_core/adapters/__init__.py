"""Reference adapters that ship with the core package."""
