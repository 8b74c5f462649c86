"""
Clinical record list/query engine and nested-path record editor.

Fetches pages of FHIR resources, joins each record to the record it
references, filters, sorts and paginates them client-side, and edits
record trees copy-on-write before submitting them back to the server.
"""
