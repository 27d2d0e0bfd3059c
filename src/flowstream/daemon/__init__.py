"""Flowstream daemon: session orchestrator, ledger adapters and control plane."""
