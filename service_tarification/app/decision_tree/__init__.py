"""
Decision tree package.

Defines the versioned decision tree a tariff is priced with, and the
algorithms that walk it. A tree is an ordered chain of typed nodes; each
node selects one branch for the subject, and a branch may carry a reduction
and a private sub-chain of child nodes.

Modules of interest:
- models: Tree document models, evaluation context and results.
- conditions, resolver: Condition matching and branch selection.
- engine: Chain walker producing the final price and its trail.
- bounds: Advertised price range, without a subject.
- documents, editing: Document (de)serialization and authoring operations.
- lifecycle: Lock and duplicate discipline, tree registry.
- catalog: Node types offered to tree authors.
"""
