from .config_loader import Config, config

__all__ = ['Config', 'config']
