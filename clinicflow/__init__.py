# Clinicflow - clinic appointments, treatment plans, lab and pharmacy fulfilment
