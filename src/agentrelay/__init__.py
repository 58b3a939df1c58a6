"""agentrelay: sequential multi-stage LLM task pipelines."""

__version__ = "0.1.0"
