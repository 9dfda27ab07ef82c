"""SSV Assumptions Engine: market snapshot and network fee projection backend."""
