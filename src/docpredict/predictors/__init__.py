"""Prediction client adapters."""

from docpredict.predictors.echo import EchoPredictionClient
from docpredict.predictors.watsonx import WatsonxPredictionClient

__all__ = ["EchoPredictionClient", "WatsonxPredictionClient"]
