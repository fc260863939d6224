"""Building blocks for actor-style LLM agents, teams, routing and transport."""

__version__ = "0.1.0"