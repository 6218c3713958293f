"""Error types raised while building a simulation."""


class ConfigurationError(ValueError):
    """
    Invalid simulation setup, detected at construction time.

    Covers mismatched buffers, non-positive mass/rest length/time step,
    out-of-range or self-referencing spring endpoints and unknown presets.
    Nothing in the per-step kernel path raises.
    """
