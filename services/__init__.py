"""
Collaborator implementations used by the conversation layer: configuration store, chat and
attachment stores, blob storage, image optimization, page-text extraction and upload
validation.
"""
