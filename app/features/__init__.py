"""
Features Module - Self-contained feature units.

- knowledge: chunking, embeddings, retrieval, ingestion and the store boundary
- insights: query analysis, tracking, content gaps and metrics
- search: the query pipeline that ties the two together
"""
