"""Core functionality for Synthwiki.

Layers, leaf first:

1. **Storage** (file_cache.py, valid_pages.py):
   - Flat-file cache with age-based expiry
   - Persistent registry of slugs known to be valid topics

2. **Collaborators** (llm_client.py, image_client.py, generator.py):
   - Async HTTP clients for the language and image models
   - Typed requests and decoding of model output (model_output.py)

3. **Pipelines** (pipeline.py, image_pipeline.py):
   - Article resolution, generation, assembly and caching
   - Image prompt preparation and on-demand image generation

4. **Support Utilities**:
   - slugs.py: Title/slug conversion
   - markup.py: Cross-references, image placeholders, table of contents
   - templates.py: Jinja2 page rendering
"""
