"""NodeSet pod identity, deletion ordering, volume claim retention and Slurm node control."""

__version__ = "0.4.0"
__all__ = ["models", "utils", "sorting", "kube", "podcontrol", "slurm", "slurmcontrol"]