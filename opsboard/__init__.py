"""opsboard: realtime update layer for the agent operations dashboard."""
__version__ = '0.3.0'
