"""
Concrete implementations of the tensornet contracts: device buffers and their
kernels, reductions, layer graphs, optimizers, losses, serialization and the
data-parallel network executor.
"""
