"""
Governance Optimization Engine

Core imports are lazily loaded so that importing a submodule (for example
``govopt.crypto``) does not pull in the whole engine:

    from govopt.governance import GovernanceEngine
    from govopt.config import load_config
    from govopt.exceptions import GovernanceError
"""

__version__ = "0.1.0"


def __getattr__(name):
    """Lazy module loading."""
    if name == 'GovernanceEngine':
        from .governance.engine import GovernanceEngine
        return GovernanceEngine
    elif name == 'EngineConfig':
        from .config.loader import EngineConfig
        return EngineConfig
    elif name == 'load_config':
        from .config.loader import load_config
        return load_config
    elif name == 'GovernanceError':
        from .exceptions import GovernanceError
        return GovernanceError
    raise AttributeError(f"module 'govopt' has no attribute {name!r}")

__all__ = ['GovernanceEngine', 'EngineConfig', 'load_config', 'GovernanceError']
