"""
Corint: an LLM agent that plans, calls tools, tracks its budget and keeps
its sessions on disk.

    from corint_agent.agent import Orchestrator
    from corint_agent.brain import LLMClientFactory
"""

__version__ = "0.1.0"
