"""
Docbatch - Continuous batch extraction of documents and URLs.

Modules:
    - config: Centralized configuration (environment variables)
    - hasher: xxHash content fingerprints
    - ledger: Persisted record of processed keys (HashLedger)
    - urllist: URL-list parsing and classification
    - resolver: 3-layer URL fetch (httpx → Playwright → remote render)
    - gateway: Contract to the external conversion CLI
    - output: Output paths and quarantine of failed inputs
    - scanner: Input tree traversal
    - watcher: Early wake-up on input changes
    - scheduler: Concurrency-bounded batches with retries
    - orchestrator: Cycle driver and CLI entry point

Cycle Flow:
    Discover → Fingerprint → Dedup (ledger) → Resolve URLs → Extract → Persist

Usage:
    from docbatch import Orchestrator

    orchestrator = Orchestrator()
    await orchestrator.run_forever()
"""

from .orchestrator import Orchestrator

__all__ = ["Orchestrator"]
