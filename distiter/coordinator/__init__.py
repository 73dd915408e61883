"""
Coordinator module.

The coordinator is responsible for:
- Starting workers and waiting for their shards
- Broadcasting the first query
- Applying coordinator steps serially as answers arrive
- Evaluating stopping criteria
- Draining workers and returning the History
"""
