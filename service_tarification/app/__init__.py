"""
Tarification Service package.

Prices membership fees for a tariff from a configurable decision tree. It
provides:

- app.decision_tree: Tree model, evaluation engine, bounds, editing and
  lifecycle of decision trees.
- app.subjects: Derivation of an evaluation context from a subject profile.
- app.service: Facade used by callers to advertise, simulate and quote
  prices.

Guidelines:
- Evaluation is pure; the caller resolves subject attributes beforehand.
- A tree that has priced a subscription is locked and never edited again.
"""
