"""File upload and storage module.

Uploaded files are stored on local disk under a unique name and served
back from ``/uploads/{name}``. A chat message references an upload with
``messageType = file`` and content ``<originalName>|<fileUrl>``.

Supported file types (by extension): jpeg, jpg, png, gif, pdf, doc, docx, txt.
Size limit: 5MB (``uploads.max_size_bytes``).
"""
