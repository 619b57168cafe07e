"""
Recipe catalogue search.

Responsibilities:
- Validate filters and compile them into independent, parameter-bound predicates.
- Score and order recipes, ingredients and users for a text query.
- Paginate recipe results and derive continuation metadata.
- Serve autocomplete suggestions and time-windowed trends.
- Fan a single query out across entity types.
"""
