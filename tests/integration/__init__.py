"""
Integration Tests Package

End-to-end flows through the engine facade.

TEST AXIOMS:
=============
1. Every write is a complete batch committed once (the bump commits twice)
2. Reads reflect the latest commit, never a cache
3. History survives restarts of the file-backed store
"""
