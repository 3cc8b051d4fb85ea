"""
ShipBridge

Warehouse shipping-integration engine: pulls fulfillment orders from the
warehouse source, quotes them across courier providers, books the chosen
shipment and keeps its label.
"""
__version__ = "1.0.0"
