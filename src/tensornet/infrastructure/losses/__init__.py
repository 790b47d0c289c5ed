from ._losses import (
    CategoricalAccuracy,
    DiceLoss,
    Loss,
    MeanSquaredErrorLoss,
    MeanSquaredErrorMetric,
    Metric,
    get_loss,
    get_metric,
)

__all__ = [
    Loss.__name__,
    Metric.__name__,
    MeanSquaredErrorLoss.__name__,
    DiceLoss.__name__,
    MeanSquaredErrorMetric.__name__,
    CategoricalAccuracy.__name__,
    get_loss.__name__,
    get_metric.__name__,
]
