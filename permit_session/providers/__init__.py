"""
Pluggable providers, selected by Settings and loaded by the ServiceContainer:

- store: redis | memory          (create_backend)
- messaging: http | log          (create_provider)
- extraction: http | pattern     (create_provider)
"""
