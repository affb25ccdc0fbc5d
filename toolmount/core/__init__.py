"""
toolmount.core - Tool Registry and Execution Core

Everything that does not need a database:
- Schema conversion from declarative input schemas to parameter sets
- Static validation of handler source
- The mount cache of enabled primitives
- The sandbox and the execution runtime
- The agent-facing router
"""
