# tests/integration/__init__.py
"""
Integration tests for the live device simulation server.

These tests verify that multiple components work together correctly
as a complete system, driving the FastAPI application over real
WebSocket frames.

Running Integration Tests:
    pytest tests/integration/                    # All integration tests
    pytest tests/integration/ -m integration     # Tagged as integration
"""
