# Shared kanban board engine: card ordering, optimistic drag moves and
# change-feed reconciliation.
#
# Components:
#   positions.py - fractional position allocation
#   state.py     - in-memory board state and rendering projection
#   drag.py      - drag lifecycle and move persistence
#   sync.py      - snapshot reconciliation on change notifications
#   session.py   - one open board wiring the above together
