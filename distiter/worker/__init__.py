"""
Worker module.

Workers are the execution contexts that:
- Build their local problem shard once
- Answer each query with worker_step
- Acknowledge the stop signal and exit
"""
