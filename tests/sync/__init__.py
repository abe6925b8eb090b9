"""
Test suite for the flows <-> source tree synchronization.

Covers each stage of the sync pipeline:
- Name sanitizing and collision suffixes
- Flows to manifest projection
- TreeReconciler creation, remote-wins updates and the deletion sweep
- Reverse mapping of edited files back onto flow nodes
- FlowSourceWatcher filtering and debouncing
- FlowSyncEngine pull/push coordination
- File change events and batches
"""
