"""
Unit tests for the mail threat scanner.

Test individual components in isolation:
- Data models (fingerprints, wire messages, control messages)
- Channel ports, prompt builder, output parser
- Model sizing, inference worker proxy, worker runtime
- Lifecycle manager and orchestrator state machines
- Client request queue and cache-first scanner
"""
