"""Behavioral pattern detection over a trader's history.

This package provides the detectors and the pieces they share:

- **Streaks and thresholds**: win/loss segmentation and sensitivity tiers
- **Revenge trading**: real-time signals and historical episodes
- **Overconfidence**: position-size escalation during win streaks
- **Loss aversion**: hold-time asymmetry between winners and losers
- **Counterfactuals**: what the price did after exit and before entry
"""
