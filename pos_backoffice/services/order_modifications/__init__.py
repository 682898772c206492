"""
Order amendment, approval, versioning and fulfillment services.

Import the façade from ``pos_backoffice.services.order_modifications.service``;
this package keeps its namespace empty so ORM models can import the enums
without pulling in the service layer.
"""
