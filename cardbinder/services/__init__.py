"""
CardBinder services.

Collection state for one owner: owned counts, binders, the computed
system binders and the coordinator keeping them in step.
"""
