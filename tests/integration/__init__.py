"""
Integration tests for the mail threat scanner.

Test components together or against real external services:
- Full pipeline (email -> queue -> orchestrator -> in-process worker -> FakeEngine)
- API endpoints (FastAPI TestClient)
- Fingerprint cache against a real Redis (skipped when unreachable)
"""
