from .bootstrapping_engine import BootstrappingEngine

__all__ = ['BootstrappingEngine']
