from sync_engine.transformers.order_transformer import (
    OrderTransformer,
    TransformIssue,
    TransformResult,
)

__all__ = ["OrderTransformer", "TransformIssue", "TransformResult"]
