"""
Guardian Ensemble Scoring - LightGBM / XGBoost / CatBoost Ensemble
===================================================================

Version: 1.0.0
"""

__version__ = "1.0.0"

# Imports are done directly in each module to avoid circular dependencies
# Use: from fraud_ensemble.engine import EnsembleFraudScoringEngine
# Use: from fraud_ensemble.schemas import FeatureVector
