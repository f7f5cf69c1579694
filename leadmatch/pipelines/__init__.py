"""Request pipelines: profile projection and the matching orchestrator.

Each step is a plain function or method so it can be exercised on its own.
"""
