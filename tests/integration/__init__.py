"""
Integration tests.

End-to-end chat sessions through the wired engine:
- Room creation, agent join and leave
- Messaging and department/agent handoffs
- Serving through a cache outage
- Engine lifespan startup and shutdown

They run against the in-memory collaborators in ``tests.test_fixtures``.
"""
