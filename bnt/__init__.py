"""Parallel bootnode tester for Polkadot networks."""
