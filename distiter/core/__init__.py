"""
Core types of the execution engine.

- Algorithm contract and aggregation adapter
- Problem shard glue and worker id resolution
- Stopping criteria evaluator
- History recorder
- Run configuration and error types
"""
