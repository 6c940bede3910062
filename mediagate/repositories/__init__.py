"""
Repository package for data access layers.

The media path reads projects, videos, albums and the runtime security settings
through `MediaRepositoryProtocol`. Provide a custom implementation by setting
`MEDIA_REPOSITORY_IMPL` to a dotted path like:

    myapp.data.media:CachedMediaRepository

The class is constructed with the request's `AsyncSession`.
"""
