"""
ML layer: first-principles demand models (no numerical library).

Modules
-------
metrics         : In-sample MAE / RMSE / MAPE / R² on the combined target.
linear          : Batch gradient-descent linear regression with L2, two targets
                  trained in parallel and merged into one weight vector.
tree            : Variance-reduction regression tree grown into a flat node array.
gradient_boost  : Residual boosting over ``tree`` with Bernoulli subsampling.
ensemble        : Linear + gradient boost blended by inverse in-sample MAPE.
trainer         : DemandTrainer.train_model(): data loading, dispatch, registry save.
predictor       : Predictor: point estimate, confidence, interval, importance,
                  live performance tracking.
"""
