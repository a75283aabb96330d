"""Provisioning engine for declarative environments.

Builds a tiered resource graph from an environment spec and applies it to
a cluster handle, tier by tier, recording a result per resource.
"""
