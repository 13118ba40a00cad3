"""
Quote module - supplier quote normalization and comparison.

Submodules:
- quotes: Entry points called by the API (analyze, batch, compare, comparisons, files)
- quote_extract: LLM-based normalization of quote text into ExtractedQuote
- quote_suppliers: Supplier registry reconciliation after analysis
- quote_batch: Sequential batch analysis with per-quote failure isolation
- quote_compare: Scope pre-analysis, LLM comparison and ranking enforcement
- quote_comparisons: One stored comparison per category (save/get/delete)
- quote_models: Pydantic data models (ExtractedQuote, LineItem, ComparisonResult)
- prompts_quotes: Extraction and comparison prompts
"""
