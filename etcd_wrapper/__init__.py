"""etcd-wrapper: startup coordinator for a single etcd member."""

__version__ = "0.1.0"
