"""Pool manager for disposable Bitbucket Server instances."""

__version__ = "0.1.0"
